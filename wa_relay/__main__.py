from wa_relay.cli import main

main()

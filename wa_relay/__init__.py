"""
WhatsApp Notification Relay

- relay server: FastAPI app owning the WhatsApp transport (wa_relay.main)
- bridge: queue poller delivering jobs through the relay (wa_relay.services.bridge)
"""

__version__ = "1.0.0"

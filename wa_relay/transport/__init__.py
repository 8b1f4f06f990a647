# wa_relay/transport/__init__.py
from .gateway import TransportClient, SendResult, SendStatus, ConnectionEvent
from .session import TransportSession, SessionState, SessionSnapshot
from .dry_run import DryRunTransport
from .meta import MetaTransport
from .factory import build_transport

__version__ = "0.1.0"

from wscat.session import Session
from wscat.console import Renderer, LineSource
from wscat.net import ClientBridge, ServerBridge

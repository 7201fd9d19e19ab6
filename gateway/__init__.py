from .base import PersistenceGateway
from .http import HttpGateway
from .sqlite import SqliteGateway

__all__ = ["PersistenceGateway", "HttpGateway", "SqliteGateway"]

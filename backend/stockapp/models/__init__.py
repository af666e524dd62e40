from .documents import Document, CompositeIndex
from .auth import AuthAccount, AuthSession

__all__ = [
    'Document', 'CompositeIndex',
    'AuthAccount', 'AuthSession',
]

"""Site Knowledge Base.

A local question/answer knowledge base for site operations that works
offline and syncs with a shared remote store.
"""

from site_knowledge.knowledge_base import KnowledgeBase

__version__ = "0.1.0"
__all__ = ["KnowledgeBase"]

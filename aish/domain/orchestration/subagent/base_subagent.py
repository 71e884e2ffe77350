from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from datetime import datetime


class BaseSubAgent(ABC):
    """Base class for auxiliary backend calls made outside the query path"""

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description
        self.created_at = datetime.now()
        self.last_active: Optional[datetime] = None
        self.runs = 0

    @abstractmethod
    async def process(self, input_text: str) -> Optional[Any]:
        """Process input and return a result, or None when there is nothing to do"""
        pass

    @abstractmethod
    def accepts(self, input_text: str) -> bool:
        """Whether the input is worth a backend call"""
        pass

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_active = datetime.now()
        self.runs += 1

    def get_info(self) -> Dict[str, Any]:
        """Get agent information"""
        return {
            "name": self.name,
            "description": self.description,
            "runs": self.runs,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat() if self.last_active else None
        }

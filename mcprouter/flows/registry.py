"""Flow registry — flows registered once, replaced by id."""
import logging
from typing import Dict, List, Optional

from .base import Flow, FlowDescriptor

logger = logging.getLogger(__name__)


class FlowRegistry:
    def __init__(self):
        self._flows: Dict[str, Flow] = {}

    def add(self, flow: Flow):
        replaced = flow.id in self._flows
        self._flows[flow.id] = flow
        logger.info(f"{'Replaced' if replaced else 'Registered'} flow: {flow.id}")

    def get(self, flow_id: str) -> Optional[Flow]:
        return self._flows.get(flow_id)

    def list(self) -> List[Flow]:
        return list(self._flows.values())

    def descriptors(self) -> List[FlowDescriptor]:
        return [f.descriptor for f in self._flows.values()]

    def remove(self, flow_id: str) -> bool:
        return self._flows.pop(flow_id, None) is not None

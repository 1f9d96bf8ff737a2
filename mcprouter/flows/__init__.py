"""Multi-turn flows — registry, router, engine and the built-in flows."""
from .base import Flow, FlowContext, FlowDescriptor, FlowState, StageOutcome
from .registry import FlowRegistry
from .router import FlowRouter, FlowRouting
from .engine import FlowEngine, FlowResult
from .provider_builder import ProviderBuilderFlow, BuilderStage, BuilderParams

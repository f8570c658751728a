"""Token accounting and pruning of session event logs."""

from .event_log import normalize_whitespace, parse_event_log
from .oracle import AnthropicTokenOracle, TiktokenOracle, TokenOracle, build_oracle
from .pruner import ContextPruner, PruneResult
from .token_counter import TokenCount, TokenCounter, UsageBreakdown

__all__ = [
    "AnthropicTokenOracle",
    "ContextPruner",
    "PruneResult",
    "TiktokenOracle",
    "TokenCount",
    "TokenCounter",
    "TokenOracle",
    "UsageBreakdown",
    "build_oracle",
    "normalize_whitespace",
    "parse_event_log",
]

"""
FoodXchange - B2B food sourcing marketplace lifecycle engine

Buyers post sourcing projects, vendors bid with proposals, buyers evaluate,
rank and award. Every state change is a conditional write against the entity
store, announced as a change event that keeps the search index and the
notification stream in step.

Fun fact: The Chicago Board of Trade standardized grain grading in 1848 so
that buyers could trade wheat they had never seen. Structured specifications
are still what makes remote food sourcing work.
"""

from foodxchange.exchange import Exchange

__version__ = "0.1.0"
__all__ = ["Exchange", "__version__"]

"""zonestats package"""

# Re-export the aggregators subpackage so dotted paths like
# 'zonestats.aggregators.*' work with tooling that traverses attributes.
from . import aggregators as aggregators

"""
Organizational hierarchy: plants, areas, sectors and assets.

Scoped permissions name one node of this tree; the access-control core
only needs each node's ancestor chain.
"""

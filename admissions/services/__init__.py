"""Service layer: all milestone reads and writes go through these modules."""

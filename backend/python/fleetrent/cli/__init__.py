"""Command line interface (``fleetrent``)."""

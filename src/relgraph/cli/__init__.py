"""relgraph command line interface."""

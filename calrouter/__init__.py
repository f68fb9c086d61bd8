"""CalRouter — scheduling webhook enrichment and forwarding service."""

__version__ = "1.0.0"

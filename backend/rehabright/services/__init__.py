"""Services around the analysis core: session registry and summaries."""

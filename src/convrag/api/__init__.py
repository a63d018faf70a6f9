"""HTTP surface for ConvRAG."""

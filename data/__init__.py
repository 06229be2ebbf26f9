# Static lookup tables and bundled datasets

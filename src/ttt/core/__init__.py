"""Store data model, StoreClient contract and its direct implementation."""

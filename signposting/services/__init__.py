"""Service layer — owns business rules, transactions and cache invalidation."""

"""Persistence: the MarketplaceStore protocol and its Supabase and in-memory implementations."""

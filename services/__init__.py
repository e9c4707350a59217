"""Application services: pricing, wallet ledger, quote lifecycle, offer settlement, notifications."""

"""WornVault storefront request validation."""

"""Pure analytics: fixed-point conversion, risk aggregation and action gating."""

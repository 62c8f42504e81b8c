"""Human channels: where the attempt loop waits for a decision."""

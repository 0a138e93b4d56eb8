"""RevoCity: AI-assisted garbage bin complaint platform."""

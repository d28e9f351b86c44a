"""Configuration: env-driven runtime settings plus the YAML app-config that carries cluster rules."""

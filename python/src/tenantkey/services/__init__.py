"""Service layer: passkey ceremonies, sessions, admin gate and tenancy."""

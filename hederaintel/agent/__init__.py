"""Agent runtime: peer protocol, transports and intelligence collaborators."""

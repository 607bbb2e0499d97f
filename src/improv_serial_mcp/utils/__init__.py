"""Small helpers shared by the protocol and transport layers."""

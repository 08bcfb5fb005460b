"""
Business logic of the control plane.

Services take a `Store` plus validated request schemas and raise
`ControlPlaneError` subclasses; they never see transport details.
"""

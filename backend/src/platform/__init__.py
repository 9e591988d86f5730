"""
Platform seams consumed by the entitlement engine.

- tenant_context: tenant identity attached upstream to request.state
"""

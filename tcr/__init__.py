"""Tenant Config Reconciler (TCR).

Converges one ConfigMap per tenant listed in a TenantInfo resource:
 - desired state derived from the TenantInfo spec
 - idempotent create/update of each tenant ConfigMap
 - deletion of owned ConfigMaps whose tenant left the spec, found through an
   owner-uid index rather than by enumeration

The reconcile pass is re-entrant; a failed pass is simply run again.
"""

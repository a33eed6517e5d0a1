"""Vulcan Config Builder (VCB).

Long-running daemon that:
 - reads per-service declarations from etcd (/ft/services)
 - derives the backend/frontend configuration vulcand expects
 - reconciles it into the vcb-owned part of /vulcand, leaving foreign keys alone
 - rebuilds after every (debounced) change to the declarations
"""

"""Core provisioning logic, independent of Flask.

Module Structure:
    - gateway/                : HTTP adapters for the hosted backend
    - badges.py               : badge prefixes, tolerant suffix parsing, allocation
    - invites.py              : stateless invite token encode/decode
    - saga.py                 : stage runner with a compensation stack
    - reconciler.py           : badge counter rebuild (incremental / full)
    - provisioning_service.py : create / update / delete sagas and the facade
    - validators.py           : input validation
    - exceptions.py           : provisioning error taxonomy

Usage Pattern:
    Nothing is auto-imported; import the module you need:
        from roster.core.provisioning_service import get_provisioning_service
        from roster.core.badges import next_code
        from roster.core.invites import encode, decode
"""

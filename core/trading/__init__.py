"""
Trading core shared by the decision and execution engines: the ledger and
decision models plus the collaborator protocols they depend on.
"""

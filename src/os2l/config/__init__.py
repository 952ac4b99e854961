"""
Configuration for the listener. Options can be given directly as a mapping, or loaded from
layered ConfigObj files that are validated against a schema.
"""

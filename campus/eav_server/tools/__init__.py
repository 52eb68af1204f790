"""
Tools for the Campus EAV core.

- eav_cli: catalog seeding, registry listing and entity inspection
"""

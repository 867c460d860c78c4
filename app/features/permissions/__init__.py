"""
Permission management feature module.

Stores one permission matrix per subject (clinic, doctor, agent) and answers
module/action checks against it with deny-by-default resolution.
"""

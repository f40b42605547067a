"""
Console scripts, generated from functions decorated with `utils.entrypoint`.
"""

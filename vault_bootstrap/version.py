"""Vault Bootstrap meta information.
   Initializes, unseals and configures a Vault server on first run.
"""
__title__ = 'vault_bootstrap'
__description__ = (
   'One-shot controller that initializes, unseals and configures '
   'a Vault server.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'

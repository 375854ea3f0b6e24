"""MasterKey Meta information.
   MasterKey keeps credentials in a single passphrase-encrypted vault file.
"""
__title__ = 'masterkey'
__description__ = (
   'MasterKey keeps credentials in a single '
   'passphrase-encrypted vault file.'
)
__version__ = '0.4.0'
__license__ = 'Apache-2.0'

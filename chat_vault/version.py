"""Chat Vault Meta information.
   Chat Vault keeps chat messages and provider API keys encrypted at rest.
"""
__title__ = 'chat_vault'
__description__ = (
   'Chat backend storing conversations, messages and provider '
   'API keys encrypted at rest.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'

from databricks_driver.auth.credentials import Credential, CredentialBroker

__all__ = ["Credential", "CredentialBroker"]

# top2000_auth/app/core/exceptions.py


class AuthError(Exception):
    """Base de todos os erros do núcleo de autenticação."""
    def __init__(self, message: str = "Authentication error"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(AuthError):
    """Segredo de assinatura ausente/malformado ou configuração inválida. Fatal na inicialização."""
    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message)


class InvalidCredentials(AuthError):
    """Senha errada ou usuário inexistente. Não revela qual dos dois."""
    def __init__(self, message: str = "Incorrect email or password"):
        super().__init__(message)


class InvalidRefreshToken(AuthError):
    """Refresh token ausente, expirado ou revogado. O chamador não distingue os casos."""
    def __init__(self, message: str = "Invalid refresh token"):
        super().__init__(message)


class ReplayDetected(InvalidRefreshToken):
    """Um refresh token já rotacionado foi apresentado de novo."""
    def __init__(self, message: str = "Refresh token reuse detected", user_id: int | None = None):
        self.user_id = user_id
        super().__init__(message)


class StorageError(AuthError):
    """Falha de I/O ao falar com o banco de tokens."""
    def __init__(self, message: str = "Token storage unavailable"):
        super().__init__(message)


class ConflictError(AuthError):
    """Violação de unicidade ao inserir (ex: colisão de valor de token)."""
    def __init__(self, message: str = "Conflict", entity: str = "RefreshToken"):
        self.entity = entity
        super().__init__(message)

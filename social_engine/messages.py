"""
User-facing message catalogs (English and French).

Provides:
    - format_error(): Localized failure message for an ``ErrorKind``
    - day_name(): Localized weekday name (0=Monday)
    - format_rationale(): Localized explanation of a scheduling suggestion
    - best_practices(): Localized posting tips per platform
    - PLATFORM_DISPLAY_NAMES: Human-readable platform names

Raw provider error text is only ever appended as detail after the
localized sentence, never shown on its own.
"""

from typing import Dict, List, Optional

from social_engine.exceptions import ErrorKind

DEFAULT_LOCALE = "en"

PLATFORM_DISPLAY_NAMES: Dict[str, str] = {
    "youtube": "YouTube",
    "instagram": "Instagram",
    "tiktok": "TikTok",
    "facebook": "Facebook",
    "twitter": "Twitter",
    "linkedin": "LinkedIn",
}


# =============================================================================
# ERROR MESSAGES
# =============================================================================

ERROR_MESSAGES: Dict[str, Dict[ErrorKind, str]] = {
    "en": {
        ErrorKind.NO_ACCOUNT_CONNECTED: "No {platform} account connected. Connect an account to publish.",
        ErrorKind.TOKEN_EXPIRED_NO_REFRESH: "Your {platform} session has expired. Please reconnect your account.",
        ErrorKind.REFRESH_FAILED: "We could not renew access to your {platform} account. Please reconnect it.",
        ErrorKind.INSUFFICIENT_SCOPE: "Your {platform} account is missing publishing permissions. Reconnect it and accept all requested permissions.",
        ErrorKind.UNSUPPORTED_CONTENT: "This type of content cannot be published on {platform}.",
        ErrorKind.PUBLISH_WINDOW_MISSED: "The scheduled time for this {platform} post passed before it could be published.",
        ErrorKind.PLATFORM_API_ERROR: "{platform} rejected the publication.",
        ErrorKind.MEDIA_FETCH_ERROR: "The media for this {platform} post could not be downloaded.",
    },
    "fr": {
        ErrorKind.NO_ACCOUNT_CONNECTED: "Aucun compte {platform} connecté. Connectez un compte pour publier.",
        ErrorKind.TOKEN_EXPIRED_NO_REFRESH: "Votre session {platform} a expiré. Veuillez reconnecter votre compte.",
        ErrorKind.REFRESH_FAILED: "Impossible de renouveler l'accès à votre compte {platform}. Veuillez le reconnecter.",
        ErrorKind.INSUFFICIENT_SCOPE: "Votre compte {platform} n'a pas les permissions de publication. Reconnectez-le en acceptant toutes les permissions demandées.",
        ErrorKind.UNSUPPORTED_CONTENT: "Ce type de contenu ne peut pas être publié sur {platform}.",
        ErrorKind.PUBLISH_WINDOW_MISSED: "L'heure prévue pour cette publication {platform} est dépassée.",
        ErrorKind.PLATFORM_API_ERROR: "Erreur API {platform} : la publication a été refusée.",
        ErrorKind.MEDIA_FETCH_ERROR: "Le média de cette publication {platform} n'a pas pu être téléchargé.",
    },
}

_DETAIL_LABEL = {"en": "Details", "fr": "Détails"}


def _catalog(locale: str) -> str:
    return locale if locale in ERROR_MESSAGES else DEFAULT_LOCALE


def format_error(
    kind: ErrorKind,
    platform: str,
    detail: Optional[str] = None,
    locale: str = DEFAULT_LOCALE,
) -> str:
    """Build the user-facing message for a failed publish.

    Args:
        kind: Failure classification.
        platform: Platform value (e.g. ``"twitter"``).
        detail: Raw provider / exception text, appended when present.
        locale: ``"en"`` or ``"fr"``; unknown locales fall back to English.

    Returns:
        Localized, human-readable message.
    """
    locale = _catalog(locale)
    display = PLATFORM_DISPLAY_NAMES.get(platform, platform)
    message = ERROR_MESSAGES[locale][kind].format(platform=display)
    if detail:
        message = f"{message} ({_DETAIL_LABEL[locale]}: {detail})"
    return message


# =============================================================================
# SCHEDULING TEXT
# =============================================================================

DAY_NAMES: Dict[str, List[str]] = {
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
    "fr": ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"],
}

_RATIONALE: Dict[str, Dict[str, str]] = {
    "en": {
        "default": (
            "Based on general best practices for {platform}, {day} at {hour}h "
            "is usually a strong slot. Publish more to get personalised suggestions."
        ),
        "history": (
            "Analysis of your {count} recent posts shows that {day} at {hour}h "
            "gets the best engagement on {platform} (confidence {confidence}%)."
        ),
    },
    "fr": {
        "default": (
            "D'après les bonnes pratiques de {platform}, le {day} à {hour}h "
            "est généralement un bon créneau. Publiez davantage pour des suggestions personnalisées."
        ),
        "history": (
            "L'analyse de vos {count} publications récentes montre que le {day} à {hour}h "
            "obtient le meilleur engagement sur {platform} (confiance {confidence}%)."
        ),
    },
}

BEST_PRACTICES: Dict[str, Dict[str, List[str]]] = {
    "en": {
        "youtube": [
            "Publish 2-3 hours before peak viewing time",
            "Use a custom thumbnail",
            "Optimise title and description for search",
        ],
        "instagram": [
            "Post when your followers are most active",
            "Use 5-10 relevant hashtags",
            "Reply to comments within the first hour",
        ],
        "tiktok": [
            "Keep the hook in the first 3 seconds",
            "Use trending sounds",
            "Post consistently",
        ],
        "twitter": [
            "Tweet during commuting hours",
            "Use 1-2 hashtags at most",
            "Engage with replies quickly",
        ],
        "facebook": [
            "Native videos outperform links",
            "Ask questions to drive comments",
            "Post during lunch breaks",
        ],
        "linkedin": [
            "Post early in the working week",
            "Share professional insights",
            "Tag relevant people and companies",
        ],
    },
    "fr": {
        "youtube": [
            "Publiez 2-3 heures avant le pic d'audience",
            "Utilisez une miniature personnalisée",
            "Optimisez le titre et la description pour la recherche",
        ],
        "instagram": [
            "Publiez quand vos abonnés sont les plus actifs",
            "Utilisez 5 à 10 hashtags pertinents",
            "Répondez aux commentaires dans la première heure",
        ],
        "tiktok": [
            "Accrochez dans les 3 premières secondes",
            "Utilisez les sons tendance",
            "Publiez régulièrement",
        ],
        "twitter": [
            "Tweetez pendant les heures de trajet",
            "Limitez-vous à 1 ou 2 hashtags",
            "Répondez rapidement aux réponses",
        ],
        "facebook": [
            "Les vidéos natives surpassent les liens",
            "Posez des questions pour susciter des commentaires",
            "Publiez pendant la pause déjeuner",
        ],
        "linkedin": [
            "Publiez en début de semaine de travail",
            "Partagez des analyses professionnelles",
            "Mentionnez les personnes et entreprises pertinentes",
        ],
    },
}


def day_name(day: int, locale: str = DEFAULT_LOCALE) -> str:
    """Localized weekday name for *day* (0=Monday)."""
    return DAY_NAMES[_catalog(locale)][day % 7]


def format_rationale(
    platform: str,
    hour: int,
    day: int,
    confidence: int,
    sample_size: int,
    is_default: bool,
    locale: str = DEFAULT_LOCALE,
) -> str:
    """Explain why a time slot was suggested."""
    locale = _catalog(locale)
    template = _RATIONALE[locale]["default" if is_default else "history"]
    return template.format(
        platform=PLATFORM_DISPLAY_NAMES.get(platform, platform),
        day=day_name(day, locale),
        hour=hour,
        confidence=confidence,
        count=sample_size,
    )


def best_practices(platform: str, locale: str = DEFAULT_LOCALE) -> List[str]:
    return list(BEST_PRACTICES[_catalog(locale)].get(platform, []))


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DEFAULT_LOCALE",
    "PLATFORM_DISPLAY_NAMES",
    "ERROR_MESSAGES",
    "DAY_NAMES",
    "BEST_PRACTICES",
    "format_error",
    "day_name",
    "format_rationale",
    "best_practices",
]

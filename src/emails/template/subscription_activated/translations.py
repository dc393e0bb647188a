DEFAULT_TRANSLATIONS = {
    "en": {
        "lang": "en",
        "subject": "Your {plan_name} subscription is active",
        "heading": "Welcome aboard!",
        "body": "Your {plan_name} plan is now active.",
        "credits": "You have {credits_total} credits for this billing period.",
        "credits_unlimited": "Your plan includes unlimited credits.",
        "renews": "Your plan renews on {period_end}.",
        "cta": "Go to dashboard",
        "footer": "You are receiving this email because you subscribed to Launchpad.",
    },
    "es": {
        "lang": "es",
        "subject": "Tu suscripción {plan_name} está activa",
        "heading": "¡Bienvenido!",
        "body": "Tu plan {plan_name} ya está activo.",
        "credits": "Tienes {credits_total} créditos para este periodo de facturación.",
        "credits_unlimited": "Tu plan incluye créditos ilimitados.",
        "renews": "Tu plan se renueva el {period_end}.",
        "cta": "Ir al panel",
        "footer": "Recibes este correo porque te suscribiste a Launchpad.",
    },
}

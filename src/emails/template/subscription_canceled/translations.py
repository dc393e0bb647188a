DEFAULT_TRANSLATIONS = {
    "en": {
        "lang": "en",
        "subject": "Your subscription has ended",
        "heading": "Sorry to see you go",
        "body": "Your paid subscription has been canceled.",
        "free_plan": "You are now on the Free plan with {credits_total} credits per period.",
        "cta": "Choose a new plan",
        "footer": "You are receiving this email because you subscribed to Launchpad.",
    },
    "es": {
        "lang": "es",
        "subject": "Tu suscripción ha finalizado",
        "heading": "Lamentamos verte partir",
        "body": "Tu suscripción de pago ha sido cancelada.",
        "free_plan": "Ahora estás en el plan gratuito con {credits_total} créditos por periodo.",
        "cta": "Elegir un nuevo plan",
        "footer": "Recibes este correo porque te suscribiste a Launchpad.",
    },
}

DEFAULT_TRANSLATIONS = {
    "en": {
        "lang": "en",
        "subject": "Payment received, thank you",
        "heading": "Payment received",
        "body": "We received your payment of {amount} {currency}.",
        "invoice_link": "View invoice",
        "cta": "Go to dashboard",
        "footer": "You are receiving this email because you subscribed to Launchpad.",
    },
    "es": {
        "lang": "es",
        "subject": "Pago recibido, gracias",
        "heading": "Pago recibido",
        "body": "Hemos recibido tu pago de {amount} {currency}.",
        "invoice_link": "Ver factura",
        "cta": "Ir al panel",
        "footer": "Recibes este correo porque te suscribiste a Launchpad.",
    },
}

from routers import admin_jobs, artworks, auctions, auth, offers, orders, payments, shipping, users

all_routers = [
    auth.router,
    users.router,
    auctions.router,
    artworks.router,
    offers.router,
    orders.router,
    payments.router,
    shipping.router,
    admin_jobs.router,
]

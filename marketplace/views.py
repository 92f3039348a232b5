"""Views for the marketplace app: auth, vendor dashboard, cart, favorites, catalog, reviews, and checkout."""

from django.contrib import messages
from django.contrib.auth import authenticate, login, logout
from django.contrib.auth.decorators import login_required, user_passes_test
from django.contrib.auth.models import Group, User
from django.core.exceptions import PermissionDenied
from django.db.models import Avg, Count, Q
from django.http import HttpRequest
from django.shortcuts import get_object_or_404, redirect, render
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_POST

from .cart import Cart, CartItem, OutOfStock
from .categories import filter_by_category, root_categories
from .favorites import Favorites
from .forms import CheckoutForm, ProductForm, ReviewForm, StoreForm
from .models import Order, OrderItem, Product, Review, Store
from .orders import CheckoutError, place_order as place_order_from_cart, seller_orders
from .signals import GROUP_BUYERS, GROUP_VENDORS
from .variants import find_variant_by_options, get_available_options, product_variant_data
from .wallet import seller_balance


# ---- Helpers ------------------------------------------------------------------

def _get_next_url(request: HttpRequest) -> str:
    """
    Return a safe 'next' URL from POST or GET (empty string if absent/unsafe).
    Prevents open-redirects by restricting to the current host.
    """
    raw = (request.POST.get("next") or request.GET.get("next", "")).strip()
    if raw and url_has_allowed_host_and_scheme(raw, allowed_hosts={request.get_host()}):
        return raw
    return ""


def _is_vendor(user) -> bool:
    """True if the user belongs to the Vendors group."""
    return user.is_authenticated and user.groups.filter(name=GROUP_VENDORS).exists()


def _is_vendor_or_403(user) -> bool:
    """Vendor check that raises 403 instead of redirecting when unauthorized."""
    if _is_vendor(user):
        return True
    raise PermissionDenied


def _parse_int(raw, default=None):
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _public_products():
    return Product.objects.filter(is_active=True, store__status=Store.STATUS_APPROVED)


# ---- Auth & Pages --------------------------------------------------------------

def register_user(request: HttpRequest):
    """
    Register a new user as a Buyer or Vendor, log them in, and redirect.

    POST expects: username, password, email (optional), account_type in {'buyer','vendor'}.
    Honors ?next=... to redirect after success.
    """
    next_url = _get_next_url(request)

    if request.method == "POST":
        username = request.POST.get("username", "").strip()
        password = request.POST.get("password", "").strip()
        email = request.POST.get("email", "").strip()
        account_type = (request.POST.get("account_type") or "").strip().lower()

        if not username or not password:
            messages.error(request, "Username and password are required.")
            return redirect(f"{reverse('marketplace:register')}?next={next_url}")

        if User.objects.filter(username__iexact=username).exists():
            messages.error(request, "Username already taken. Please choose another one.")
            return redirect(f"{reverse('marketplace:register')}?next={next_url}")

        group_name = GROUP_VENDORS if account_type == "vendor" else GROUP_BUYERS
        group, _ = Group.objects.get_or_create(name=group_name)

        user = User.objects.create_user(username=username, password=password, email=email)
        user.groups.add(group)
        login(request, user)
        messages.success(request, f"Welcome, {username}! Your account has been created.")
        return redirect(next_url or "marketplace:welcome")

    return render(request, "register.html", {"next": next_url})


def login_user(request: HttpRequest):
    """
    Authenticate a user and log them in.

    POST expects: username, password.
    Honors ?next=... to redirect after success.
    """
    next_url = _get_next_url(request)

    if request.method == "POST":
        username = request.POST.get("username", "").strip()
        password = request.POST.get("password", "").strip()

        user = authenticate(request, username=username, password=password)
        if user is not None:
            login(request, user)
            messages.success(request, f"Welcome back, {username}!")
            return redirect(next_url or "marketplace:welcome")

        messages.error(request, "Invalid username or password.")
        return redirect(f"{reverse('marketplace:login')}?next={next_url}")

    return render(request, "login.html", {"next": next_url})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def vendor_dashboard(request: HttpRequest):
    """Vendor-only dashboard (403 if not vendor): stores, balance, recent orders."""
    context = {
        "stores": request.user.stores.all(),
        "balance": seller_balance(request.user),
        "orders": seller_orders(request.user)[:10],
    }
    return render(request, "vendor_dashboard.html", context)


@login_required(login_url="marketplace:login")
def welcome(request: HttpRequest):
    """Welcome page for authenticated users."""
    return render(request, "welcome.html")


def logout_user(request: HttpRequest):
    """Log the user out and redirect to the login page."""
    logout(request)
    return redirect("marketplace:login")


# ---- Cart (Sessions) -----------------------------------------------------------

@require_POST
def add_to_cart(request: HttpRequest):
    """
    Add a product (optionally a specific variant) to the cart.

    POST fields:
      - product_id: int (required)
      - variant_id: int (optional)
      - qty: int (optional, defaults to 1; min=1)
    """
    product_id = _parse_int(request.POST.get("product_id", "").strip())
    product = _public_products().select_related("store").filter(pk=product_id).first() if product_id else None
    if product is None:
        messages.error(request, "Invalid product.")
        return redirect("marketplace:view_cart")

    variant = None
    variant_id = _parse_int(request.POST.get("variant_id"))
    if variant_id is not None:
        variant = product.variants.filter(pk=variant_id, is_active=True).first()
        if variant is None:
            messages.error(request, "Invalid product option.")
            return redirect("marketplace:catalog_product_detail", pk=product.pk)
    elif product.variants.filter(is_active=True).exists():
        messages.error(request, "Please choose the product options first.")
        return redirect("marketplace:catalog_product_detail", pk=product.pk)

    qty = max(1, _parse_int(request.POST.get("qty", 1), 1))

    cart = Cart(request.session)
    try:
        cart.add_item(CartItem.from_product(product, quantity=qty, variant=variant))
    except OutOfStock as exc:
        messages.error(request, str(exc))
        return redirect("marketplace:catalog_product_detail", pk=product.pk)

    messages.success(request, "Added to cart.")
    return redirect("marketplace:view_cart")


def view_cart(request: HttpRequest):
    """Render the cart with line items and totals."""
    cart = Cart(request.session)
    return render(
        request,
        "cart.html",
        {"items": cart.items, "total": cart.total_price, "total_items": cart.total_items},
    )


@require_POST
def remove_from_cart(request: HttpRequest, item_id: str):
    """Remove a line from the cart entirely."""
    if Cart(request.session).remove_item(item_id):
        messages.success(request, "Item removed from cart.")
    else:
        messages.error(request, "Item not found in cart.")
    return redirect("marketplace:view_cart")


@require_POST
def update_cart_qty(request: HttpRequest, item_id: str):
    """
    Set an explicit quantity for a line in the cart.
    Qty <= 0 removes the item; larger quantities are capped at stock.
    """
    qty = _parse_int(request.POST.get("qty", 1), 1)
    item = Cart(request.session).update_quantity(item_id, qty)
    if item is None:
        messages.success(request, "Item removed from cart.")
    elif item.quantity < qty:
        messages.warning(request, f"Only {item.stock} available.")
    else:
        messages.success(request, "Quantity updated.")
    return redirect("marketplace:view_cart")


@require_POST
def clear_cart(request: HttpRequest):
    """Remove all items from the cart."""
    Cart(request.session).clear()
    messages.success(request, "Cart cleared.")
    return redirect("marketplace:view_cart")


# ---- Favorites -----------------------------------------------------------------

def favorites_list(request: HttpRequest):
    products = Favorites.for_request(request).favorite_products()
    return render(request, "favorites.html", {"products": products})


@require_POST
def toggle_favorite(request: HttpRequest, pk: int):
    product = get_object_or_404(Product, pk=pk)
    if Favorites.for_request(request).toggle(product.pk):
        messages.success(request, f"{product.name} added to favorites.")
    else:
        messages.success(request, f"{product.name} removed from favorites.")
    return redirect(_get_next_url(request) or "marketplace:favorites")


# ---- STORE CRUD (Vendor-only) --------------------------------------------------

def _own_store_or_404(user, pk):
    """Return store owned by user or 404."""
    return get_object_or_404(Store, pk=pk, vendor=user)


def _own_product_or_404(user, pk):
    """Return product owned by user (via their stores) or 404."""
    return get_object_or_404(Product, pk=pk, store__vendor=user)


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def store_list(request):
    stores = request.user.stores.all()
    return render(request, "vendor/store_list.html", {"stores": stores})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def store_create(request):
    if request.method == "POST":
        form = StoreForm(request.POST)
        if form.is_valid():
            store = form.save(commit=False)
            store.vendor = request.user
            store.save()
            messages.success(request, "Store submitted for approval.")
            return redirect("marketplace:store_list")
    else:
        form = StoreForm()
    return render(request, "vendor/store_form.html", {"form": form, "title": "New Store"})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def store_update(request, pk: int):
    store = _own_store_or_404(request.user, pk)
    if request.method == "POST":
        form = StoreForm(request.POST, instance=store)
        if form.is_valid():
            form.save()
            messages.success(request, "Store updated.")
            return redirect("marketplace:store_list")
    else:
        form = StoreForm(instance=store)
    return render(request, "vendor/store_form.html", {"form": form, "title": "Edit Store"})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def store_delete(request, pk: int):
    store = _own_store_or_404(request.user, pk)
    if request.method == "POST":
        store.delete()
        messages.success(request, "Store deleted.")
        return redirect("marketplace:store_list")
    return render(request, "vendor/confirm_delete.html", {"object": store, "type": "Store"})


# ---- PRODUCT CRUD (Vendor-only) -----------------------------------------------

@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def product_list(request):
    products = Product.objects.filter(store__vendor=request.user).select_related("store")
    return render(request, "vendor/product_list.html", {"products": products})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def product_create(request):
    if request.method == "POST":
        form = ProductForm(request.POST, user=request.user)
        if form.is_valid():
            product = form.save(commit=False)
            if product.store.vendor_id != request.user.id:
                messages.error(request, "Invalid store selection.")
            else:
                product.save()
                messages.success(request, "Product created.")
                return redirect("marketplace:product_list")
    else:
        form = ProductForm(user=request.user)
    return render(request, "vendor/product_form.html", {"form": form, "title": "New Product"})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def product_update(request, pk: int):
    product = _own_product_or_404(request.user, pk)
    old_price = product.price
    old_store_id = product.store_id
    if request.method == "POST":
        form = ProductForm(request.POST, instance=product, user=request.user)
        if form.is_valid():
            p = form.save(commit=False)
            if p.store_id != old_store_id:
                messages.error(request, "Products cannot be moved to another store.")
            elif p.price != old_price and not request.user.has_perm("marketplace.can_change_product_price"):
                messages.error(request, "You are not allowed to change prices.")
            else:
                p.save()
                messages.success(request, "Product updated.")
                return redirect("marketplace:product_list")
    else:
        form = ProductForm(instance=product, user=request.user)
    return render(request, "vendor/product_form.html", {"form": form, "title": "Edit Product"})


@login_required(login_url="marketplace:login")
@user_passes_test(_is_vendor_or_403)
def product_delete(request, pk: int):
    product = _own_product_or_404(request.user, pk)
    if request.method == "POST":
        product.delete()
        messages.success(request, "Product deleted.")
        return redirect("marketplace:product_list")
    return render(request, "vendor/confirm_delete.html", {"object": product, "type": "Product"})


# ---- Catalog (Public) ----------------------------------------------------------

def catalog_store_list(request: HttpRequest):
    """Public: show all approved stores so buyers can browse by store."""
    stores = Store.objects.filter(status=Store.STATUS_APPROVED).select_related("vendor").order_by("name")
    return render(request, "catalog/store_list.html", {"stores": stores})


def catalog_product_list(request: HttpRequest, store_id: int):
    """
    Public: list products for a given store.
    Supports simple search with ?q= and a ?category= slug filter.
    """
    store = get_object_or_404(Store, pk=store_id, status=Store.STATUS_APPROVED)
    q = request.GET.get("q", "").strip()
    category = request.GET.get("category", "").strip()

    products = Product.objects.filter(store=store, is_active=True).order_by("name")
    if q:
        products = products.filter(Q(name__icontains=q) | Q(description__icontains=q))
    products = filter_by_category(products, category)

    context = {
        "store": store,
        "products": products,
        "q": q,
        "category": category,
        "categories": root_categories(),
    }
    return render(request, "catalog/product_list.html", context)


def catalog_product_detail(request: HttpRequest, pk: int):
    """
    Public: a single product with reviews, variant picker and 'Add to cart'.

    Selected options arrive as query parameters named after the variant type
    (e.g. ?Color=Red&Size=M).
    """
    product = get_object_or_404(_public_products().select_related("store"), pk=pk)
    reviews = product.reviews.select_related("user")
    rating = reviews.aggregate(average=Avg("rating"), count=Count("id"))

    data = product_variant_data(product)
    type_names = [vtype.name for vtype in data["variant_types"]]
    selected = {name: request.GET[name] for name in type_names if request.GET.get(name)}
    pickers = [
        {
            "type": vtype,
            "selected": selected.get(vtype.name),
            "available": get_available_options(data["variants"], vtype.name, selected),
        }
        for vtype in data["variant_types"]
    ]
    variant = None
    if type_names and len(selected) == len(type_names):
        variant = find_variant_by_options(data["variants"], selected)

    context = {
        "product": product,
        "reviews": reviews,
        "rating": rating,
        "pickers": pickers,
        "variant": variant,
        "is_favorite": Favorites.for_request(request).is_favorite(product.pk),
        "review_form": ReviewForm() if request.user.is_authenticated else None,
    }
    return render(request, "catalog/product_detail.html", context)


# ---- Checkout / Orders ---------------------------------------------------------

@login_required(login_url="marketplace:login")
def checkout(request: HttpRequest):
    """Confirm checkout page: shows items, shipping form and a 'Place order' button."""
    cart = Cart(request.session)
    if not cart:
        messages.error(request, "Your cart is empty.")
        return redirect("marketplace:view_cart")

    context = {"items": cart.items, "total": cart.total_price, "form": CheckoutForm()}
    return render(request, "checkout.html", context)


@require_POST
@login_required(login_url="marketplace:login")
def place_order(request: HttpRequest):
    """Convert the cart to an Order (stock, coupon, invoice email) and redirect to success."""
    form = CheckoutForm(request.POST)
    if not form.is_valid():
        messages.error(request, "Please check your shipping details.")
        return redirect("marketplace:checkout")

    data = form.cleaned_data
    try:
        order = place_order_from_cart(
            request.user,
            Cart(request.session),
            coupon_code=data.pop("coupon_code"),
            shipping_method=data.pop("shipping_method"),
            shipping=data,
        )
    except CheckoutError as exc:
        messages.error(request, str(exc))
        return redirect("marketplace:checkout" if Cart(request.session) else "marketplace:view_cart")

    messages.success(request, f"Order #{order.id} placed successfully.")
    return redirect("marketplace:order_success", order_id=order.id)


@login_required(login_url="marketplace:login")
def order_success(request: HttpRequest, order_id: int):
    order = get_object_or_404(
        Order.objects.select_related("user").prefetch_related("items__product"),
        pk=order_id,
        user=request.user,
    )
    return render(request, "order_success.html", {"order": order})


@login_required(login_url="marketplace:login")
def my_orders(request: HttpRequest):
    orders = request.user.orders.prefetch_related("items")
    return render(request, "my_orders.html", {"orders": orders})


# ---- Reviews -------------------------------------------------------------------

@require_POST
@login_required(login_url="marketplace:login")
def add_review(request: HttpRequest, pk: int):
    """Create a review; mark verified if the user bought the product."""
    product = get_object_or_404(Product.objects.select_related("store"), pk=pk)
    form = ReviewForm(request.POST)

    if not form.is_valid():
        messages.error(request, "Please provide a rating between 1 and 5.")
        return redirect("marketplace:catalog_product_detail", pk=product.id)

    if product.store.vendor_id == request.user.id:
        messages.error(request, "You cannot review your own product.")
        return redirect("marketplace:catalog_product_detail", pk=product.id)

    # One review per user+product
    if Review.objects.filter(user=request.user, product=product).exists():
        messages.error(request, "You have already reviewed this product.")
        return redirect("marketplace:catalog_product_detail", pk=product.id)

    review = form.save(commit=False)
    review.user = request.user
    review.product = product
    review.verified = OrderItem.objects.filter(order__user=request.user, product=product).exists()
    review.save()

    messages.success(request, "Thanks for your review!")
    return redirect("marketplace:catalog_product_detail", pk=product.id)

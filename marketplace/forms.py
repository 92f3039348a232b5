from django import forms
from .models import Category, Product, Review, ShippingMethod, Store


class StoreForm(forms.ModelForm):
    class Meta:
        model = Store
        fields = ("name", "description")


class ProductForm(forms.ModelForm):
    class Meta:
        model = Product
        fields = ("store", "category", "name", "description", "price", "stock", "image_url", "is_active")

    def __init__(self, *args, **kwargs):
        user = kwargs.pop("user", None)
        super().__init__(*args, **kwargs)
        # Limit the store dropdown to the current vendor's stores
        if user is not None:
            self.fields["store"].queryset = user.stores.all()
        self.fields["category"].queryset = Category.objects.filter(is_active=True)

class ReviewForm(forms.ModelForm):
    class Meta:
        model = Review
        fields = ("rating", "comment")
        widgets = {
            "rating": forms.NumberInput(attrs={"min": 1, "max": 5}),
            "comment": forms.Textarea(attrs={"rows": 3}),
        }


class CheckoutForm(forms.Form):
    coupon_code = forms.CharField(max_length=40, required=False)
    shipping_name = forms.CharField(max_length=120, required=False)
    shipping_phone = forms.CharField(max_length=40, required=False)
    shipping_address = forms.CharField(max_length=255, required=False)
    shipping_city = forms.CharField(max_length=120, required=False)
    shipping_province = forms.CharField(max_length=120, required=False)
    shipping_postal_code = forms.CharField(max_length=20, required=False)
    shipping_method = forms.ModelChoiceField(
        queryset=ShippingMethod.objects.filter(is_active=True), required=False, empty_label="Pick up"
    )
    buyer_notes = forms.CharField(widget=forms.Textarea(attrs={"rows": 2}), required=False)

from django.db import models
import uuid


class TimestampedModel(models.Model):
    """
    Common timestamps for all models
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class FrozenFieldsMixin:
    """
    Refuses saves that change any of ``frozen_fields`` after the row exists.
    The baseline is taken when the instance is loaded or saved; rows written
    without ``save()`` (bulk_create) read it back from the database.
    """
    frozen_fields = ()

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_values = dict(zip(field_names, values))
        return instance

    def _remember_frozen_values(self):
        self._loaded_values = {name: getattr(self, name) for name in self.frozen_fields}

    def changed_frozen_fields(self):
        if self._state.adding or not self.frozen_fields:
            return []
        loaded = getattr(self, "_loaded_values", None)
        if not loaded:
            loaded = type(self)._base_manager.filter(pk=self.pk).values(*self.frozen_fields).first()
            if loaded is None:
                return []
        return [
            name for name in self.frozen_fields
            if name in loaded and getattr(self, name) != loaded[name]
        ]

    def save(self, *args, **kwargs):
        changed = self.changed_frozen_fields()
        if changed:
            raise ValueError(
                f"{type(self).__name__} fields are immutable once set: {', '.join(changed)}"
            )
        super().save(*args, **kwargs)
        self._remember_frozen_values()

"""Archive blob storage backends and the storage migration tool."""
